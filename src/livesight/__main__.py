from livesight.console import main

main()
