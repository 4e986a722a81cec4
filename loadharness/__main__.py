from loadharness.cli import main

raise SystemExit(main())
