#!/usr/bin/env python3
"""Backup runner for cron: `run.py run --config /etc/autobackup/config.yaml`"""
from autobackup.cli import main

if __name__ == '__main__':
    main()
