from flexkids.entrypoints.cli import main

raise SystemExit(main())
