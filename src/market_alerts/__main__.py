from market_alerts.app import main

main()
