# medremind/database.py
#
# This module is responsible for initializing the database connection
# and creating table resources. It centralizes all database setup.

import boto3

from .config import (
    AWS_REGION,
    PROFILES_TABLE_NAME,
    USER_ROLES_TABLE_NAME,
    PRESCRIPTIONS_TABLE_NAME,
    PRESCRIPTION_MEDICINES_TABLE_NAME,
    STORE_PRESCRIPTIONS_TABLE_NAME,
    DOSE_TRACKING_TABLE_NAME,
    NOTIFICATIONS_TABLE_NAME,
)

dynamodb = boto3.resource('dynamodb', region_name=AWS_REGION)
profiles_table = dynamodb.Table(PROFILES_TABLE_NAME)
user_roles_table = dynamodb.Table(USER_ROLES_TABLE_NAME)
prescriptions_table = dynamodb.Table(PRESCRIPTIONS_TABLE_NAME)
prescription_medicines_table = dynamodb.Table(PRESCRIPTION_MEDICINES_TABLE_NAME)
store_prescriptions_table = dynamodb.Table(STORE_PRESCRIPTIONS_TABLE_NAME)
dose_tracking_table = dynamodb.Table(DOSE_TRACKING_TABLE_NAME)
notifications_table = dynamodb.Table(NOTIFICATIONS_TABLE_NAME)
