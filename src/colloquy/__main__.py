from colloquy.cli import main

main()
