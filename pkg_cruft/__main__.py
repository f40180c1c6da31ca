from .cruft_cli import main

raise SystemExit(main())
