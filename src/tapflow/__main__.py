from tapflow.cli import main

main()
