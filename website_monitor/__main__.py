from website_monitor.main import main


raise SystemExit(main())
