#!/usr/bin/env python3
"""
Ensure an operator exists in super_admins and print a signed operator token.

Reads OPERATOR_EMAIL from the environment or .env file.
Run from project root: python scripts/issue_operator_token.py
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

from socialops.auth import create_super_admin_token
from socialops.db import supabase


def main():
    email = os.getenv("OPERATOR_EMAIL")
    if not email:
        print("Error: OPERATOR_EMAIL must be set")
        sys.exit(1)

    existing = supabase.table("super_admins").select("id, email").eq("email", email).execute()
    if existing.data:
        operator = existing.data[0]
    else:
        created = supabase.table("super_admins").insert({"email": email, "name": "Operator"}).execute()
        if not created.data:
            print("Error: Failed to create operator")
            sys.exit(1)
        operator = created.data[0]
        print(f"Created operator {operator['email']} ({operator['id']})")

    print(create_super_admin_token(operator["id"]))


if __name__ == "__main__":
    main()
