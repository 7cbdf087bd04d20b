from gitshift.cli.main import main

main()
