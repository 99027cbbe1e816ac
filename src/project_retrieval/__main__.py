from project_retrieval.cli import main

main()
