from devserver.main import main

main()
