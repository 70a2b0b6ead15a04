#!/usr/bin/env python3
"""
MIGRATION SCRIPT: Financial Document Collections

Creates:
1. Unique document_number index on every document collection
2. Line-item, history and settings indexes
3. Default company settings (existing values are kept)

Run: python migrations/001_document_indexes.py
"""

import asyncio
import os
import sys
from datetime import datetime

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient

import config
from finance_core.settings import default_settings_documents
from finance_core.unit_of_work import MotorUnitOfWork, SETTINGS_COLLECTION, encode_value


async def run_migration():
    """Create indexes and seed default settings."""

    print(f"Connecting to: {config.MONGO_URL}")
    print(f"Database: {config.DB_NAME}")

    client = AsyncIOMotorClient(config.MONGO_URL)
    db = client[config.DB_NAME]

    try:
        # Test connection
        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        # =====================================================
        # 1. Indexes
        # =====================================================
        await MotorUnitOfWork(client, db).ensure_indexes()
        print("✓ Document, line, history and settings indexes created")

        # =====================================================
        # 2. Default settings
        # =====================================================
        seeded = 0
        for setting in default_settings_documents():
            result = await db[SETTINGS_COLLECTION].update_one(
                {"key": setting["key"]},
                {"$setOnInsert": {"value": encode_value(setting["value"]), "created_at": datetime.utcnow()}},
                upsert=True
            )
            if result.upserted_id is not None:
                seeded += 1
                print(f"✓ Seeded setting {setting['key']} = {setting['value']}")
            else:
                print(f"• Setting {setting['key']} already present")

        await db.migrations.update_one(
            {"migration_id": "001_document_indexes"},
            {"$set": {
                "migration_id": "001_document_indexes",
                "executed_at": datetime.utcnow(),
                "status": "success"
            }},
            upsert=True
        )
        print("\n✓ Migration record saved")

        print("\n" + "="*50)
        print("MIGRATION COMPLETE: Financial Document Collections")
        print("="*50)

        return {"status": "success", "settings_seeded": seeded}

    except Exception as e:
        print(f"\n✗ Migration failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    result = asyncio.run(run_migration())
    print(f"\nResult: {result}")
