from redis_dumper.cli import main

raise SystemExit(main())
