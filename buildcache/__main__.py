from buildcache.cli import main


raise SystemExit(main())
