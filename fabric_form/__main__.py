import sys

from fabric_form.cli import main

sys.exit(main())
