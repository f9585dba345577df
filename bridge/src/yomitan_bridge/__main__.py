from yomitan_bridge.main import main

main()
