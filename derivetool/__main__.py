"""python -m derivetool"""

from derivetool.cli import main

main()
