# medremind/config.py
#
# Central place for the environment-driven settings. Everything is read once
# at import time; tests set the environment before importing the app.

import os

# --- AWS ---
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

# --- DynamoDB tables ---
PROFILES_TABLE_NAME = os.getenv("PROFILES_TABLE_NAME", "Profiles")
USER_ROLES_TABLE_NAME = os.getenv("USER_ROLES_TABLE_NAME", "UserRoles")
PRESCRIPTIONS_TABLE_NAME = os.getenv("PRESCRIPTIONS_TABLE_NAME", "Prescriptions")
PRESCRIPTION_MEDICINES_TABLE_NAME = os.getenv("PRESCRIPTION_MEDICINES_TABLE_NAME", "PrescriptionMedicines")
STORE_PRESCRIPTIONS_TABLE_NAME = os.getenv("STORE_PRESCRIPTIONS_TABLE_NAME", "StorePrescriptions")
DOSE_TRACKING_TABLE_NAME = os.getenv("DOSE_TRACKING_TABLE_NAME", "DoseTracking")
NOTIFICATIONS_TABLE_NAME = os.getenv("NOTIFICATIONS_TABLE_NAME", "Notifications")

# --- Cognito ---
COGNITO_REGION = os.getenv("COGNITO_REGION", AWS_REGION)
COGNITO_USERPOOL_ID = os.getenv("COGNITO_USERPOOL_ID")
COGNITO_APP_CLIENT_ID = os.getenv("COGNITO_APP_CLIENT_ID")
COGNITO_ISSUER = f"https://cognito-idp.{COGNITO_REGION}.amazonaws.com/{COGNITO_USERPOOL_ID}"
COGNITO_JWKS_URL = f"{COGNITO_ISSUER}/.well-known/jwks.json"

# --- Views ---
# "Today" and the dose history date groups are computed in this zone.
MEDREMIND_TIMEZONE = os.getenv("MEDREMIND_TIMEZONE", "UTC")
NOTIFICATION_FETCH_LIMIT = int(os.getenv("NOTIFICATION_FETCH_LIMIT", "20"))
DOSE_HISTORY_LIMIT = int(os.getenv("DOSE_HISTORY_LIMIT", "100"))
RECENT_PRESCRIPTION_DAYS = int(os.getenv("RECENT_PRESCRIPTION_DAYS", "7"))
