#!/usr/bin/env python3
"""
Script para inicializar la base de datos de seguimiento de lanzaderas.

Uso:
    python scripts/init_db.py

Este script:
1. Verifica la conexión a la base de datos
2. Crea las tablas de seguimiento si no existen
3. Lista las tablas disponibles
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.database import DATABASE_URL, USE_DATABASE, create_tables, init_engine, is_database_available


def main():
    print("=" * 60)
    print("Shuttle Tracking Database Initialization")
    print("=" * 60)

    if not USE_DATABASE:
        print("\nDatabase is disabled (USE_DATABASE=false)")
        print("   Set USE_DATABASE=true to enable tracking persistence.")
        return 0

    print(f"\nDatabase: {DATABASE_URL.split('@')[-1]}")

    print("\nInitializing database connection...")
    engine = init_engine()

    if engine is None:
        print("\nFailed to connect to database!")
        print("\nPossible solutions:")
        print("  1. Make sure PostgreSQL is running")
        print("  2. Check DATABASE_URL in the environment")
        return 1

    print("Database connection successful!")

    print("\nCreating tables...")
    try:
        create_tables()
    except Exception as e:
        print(f"Error creating tables: {e}")
        return 1

    if not is_database_available():
        print("Database verification failed!")
        return 1

    from sqlalchemy import inspect
    print("\nAvailable tables:")
    for table_name in inspect(engine).get_table_names():
        print(f"   - {table_name}")

    print("\n" + "=" * 60)
    print("Database initialization complete!")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
