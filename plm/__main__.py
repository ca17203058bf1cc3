"""
plm - cross-environment plugin manager

Fetches Claude-style plugins from GitHub repositories or marketplaces and
deploys their skills, agents, commands and instructions into the layouts
used by OpenAI Codex, GitHub Copilot, Gemini CLI and Google Antigravity.

Quick Start:
    pip install -e .
    plm marketplace add anthropics/claude-plugins-official
    plm install formatter --target codex
"""

from plm.cli.cli import main

if __name__ == "__main__":
    main()
