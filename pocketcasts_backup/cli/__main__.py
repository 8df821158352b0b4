from .backup_commands import main

main()
