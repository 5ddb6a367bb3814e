"""Project Runner MCP 入口点。

支持: python -m project_runner_mcp
"""

import multiprocessing

from .app import main

if __name__ == "__main__":
    multiprocessing.freeze_support()
    main()
