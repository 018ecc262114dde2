from psnl_agent.cli import main

main()
