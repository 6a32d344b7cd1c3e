from bookingrelay.cli import main

raise SystemExit(main())
