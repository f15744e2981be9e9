#!/usr/bin/env python
"""
Database Setup Script
Run this script to initialize or verify the database manually
Usage: python setup_database.py
"""

import sys
from init_db import run_on_startup

if __name__ == '__main__':
    print("\n" + "="*70)
    print("MANUAL DATABASE SETUP & VERIFICATION")
    print("="*70)
    print("This script will:")
    print("  1. Create the database if it doesn't exist")
    print("  2. Create the chapter, paper, makeup and risk alert tables")
    print("  3. Create a default super admin user if none exists")
    print("="*70 + "\n")

    if run_on_startup():
        print("\n✓ Database setup completed successfully!")
        print("\nYou can now run the service with: python main.py")
        sys.exit(0)

    print("\n✗ Database setup failed!")
    sys.exit(1)
