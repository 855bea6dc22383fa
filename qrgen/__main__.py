from qrgen.cli import main

main()
