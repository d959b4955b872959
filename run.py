#!/usr/bin/env python3
"""Backup runner for cron jobs: python run.py [--env-file .env]"""
import sys
from folder_backup.cli import cli

if __name__ == '__main__':
    cli(['run'] + sys.argv[1:])
