from issue_dispatcher.cli import main

main()
