from boxwright.cli import main

main()
