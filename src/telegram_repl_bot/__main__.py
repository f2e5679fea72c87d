import sys

from telegram_repl_bot import main

sys.exit(main())
