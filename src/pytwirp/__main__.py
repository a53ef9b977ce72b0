from pytwirp.plugin import main

raise SystemExit(main())
