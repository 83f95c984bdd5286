from spectask.cli import main

main()
