#!/usr/bin/env python3
"""
Spoilage Gas Monitor - Main Entry Point

Command-line entry point for discovering spoilage gas sensors over BLE,
connecting to them and watching their gas readings live.

Usage:
    python main.py --help                 # Show help
    python main.py menu                   # Launch interactive menu
    python main.py discover               # Discover sensors
    python main.py monitor                # Connect and monitor sensors
    python main.py daemon                 # Run the background monitor
    python main.py status                 # Show system status

Environment Setup:
    Copy and configure the environment file:
    cp .env.sample .env
    # Edit .env with your settings

Requirements:
    - Python 3.8+
    - Bluetooth adapter available
    - Proper permissions for BLE access
"""

import asyncio
import sys
from pathlib import Path

from gasmon.cli.menu import cli
from gasmon.service.monitor import run_monitor_service


def check_environment():
    """Check if the environment is properly set up."""
    issues = []

    if sys.version_info < (3, 8):
        issues.append(f"Python 3.8+ required, found {sys.version_info.major}.{sys.version_info.minor}")

    log_dir = Path("logs")
    if not log_dir.exists():
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            issues.append(f"Cannot create directory {log_dir}: {e}")

    return issues


def print_banner():
    banner = """
╔══════════════════════════════════════════════════════════════════╗
║                       Spoilage Gas Monitor                       ║
║                  BLE gas sensor monitoring (NH₃ H₂S CO₂ CH₄)      ║
╚══════════════════════════════════════════════════════════════════╝
    """
    print(banner)


def main():
    """Main entry point with environment validation."""
    print_banner()

    issues = check_environment()
    if issues:
        print("❌ Environment Issues Found:")
        for issue in issues:
            print(f"   • {issue}")
        print("\nPlease resolve these issues before running the application.")
        sys.exit(1)

    if not Path(".env").exists():
        print("ℹ️  No .env file found, using defaults (copy .env.sample to .env to customize)")

    if len(sys.argv) == 1:
        print("Usage: python main.py [COMMAND]")
        print("\nAvailable commands:")
        print("  menu      Launch interactive menu")
        print("  discover  Discover gas sensors")
        print("  monitor   Connect sensors and show live readings")
        print("  daemon    Run the background monitor")
        print("  status    Show system status")
        print("  config    Show configuration")
        print("  --help    Show detailed help")
        sys.exit(0)

    if sys.argv[1] == "daemon":
        try:
            print("🚀 Starting Spoilage Gas Monitor service...")
            asyncio.run(run_monitor_service())
        except KeyboardInterrupt:
            print("\n\n👋 Monitor interrupted by user")
            sys.exit(0)
    else:
        try:
            cli()
        except KeyboardInterrupt:
            print("\n\n👋 Application interrupted by user")
            sys.exit(0)


if __name__ == "__main__":
    main()
