# medremind/crud.py
#
# This module contains all the functions for Create, Read, Update, and Delete
# (CRUD) operations, interacting directly with the database.
#
# Lookups return None (or an empty collection) when nothing matches; boto3
# errors are left to propagate to the calling flow or view.

import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Iterable

from boto3.dynamodb.conditions import Key, Attr
from botocore.exceptions import ClientError

from .config import NOTIFICATION_FETCH_LIMIT, NOTIFICATIONS_TABLE_NAME
from .database import (
    dynamodb,
    profiles_table,
    user_roles_table,
    prescriptions_table,
    prescription_medicines_table,
    store_prescriptions_table,
    dose_tracking_table,
    notifications_table,
)
from .models import MedicineItem, StoreStatus
from .realtime import notification_channel

BATCH_GET_CHUNK = 100


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _query_all(table, **kwargs) -> List[Dict[str, Any]]:
    """Runs a query and follows LastEvaluatedKey until the result set is exhausted."""
    items: List[Dict[str, Any]] = []
    while True:
        response = table.query(**kwargs)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        kwargs['ExclusiveStartKey'] = last_key


def _batch_get(table, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """
    Fetches items by primary key `id` in chunks of 100, retrying unprocessed keys.
    Returns a mapping of id -> item; ids with no stored item are simply absent.
    """
    unique_ids = [i for i in dict.fromkeys(ids) if i]
    found: Dict[str, Dict[str, Any]] = {}
    for start in range(0, len(unique_ids), BATCH_GET_CHUNK):
        chunk = unique_ids[start:start + BATCH_GET_CHUNK]
        request = {table.name: {'Keys': [{'id': i} for i in chunk]}}
        while request:
            response = dynamodb.batch_get_item(RequestItems=request)
            for item in response.get('Responses', {}).get(table.name, []):
                found[item['id']] = item
            request = response.get('UnprocessedKeys') or None
    print(f"DB Read: Batch fetched {len(found)}/{len(unique_ids)} items from {table.name}")
    return found


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


# --- Profiles & roles ---

def db_get_profile_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    """Finds a profile by its id (the identity's subject)."""
    print(f"DB Read: Searching for profile with ID: {user_id}")
    item = profiles_table.get_item(Key={'id': user_id}).get('Item')
    if item:
        return item
    print(f"DB Read: Profile not found for ID: {user_id}")
    return None


def db_get_profile_by_email(email: str) -> Optional[Dict[str, Any]]:
    """Finds a profile by email using the GSI. Only the first match is used."""
    print(f"DB Read: Searching for profile with email: {email} in GSI 'email-index'")
    response = profiles_table.query(
        IndexName='email-index',
        KeyConditionExpression=Key('email').eq(email),
        Limit=1,
    )
    items = response.get('Items', [])
    if items:
        return items[0]
    print(f"DB Read: Profile not found for email: {email}")
    return None


def db_batch_get_profiles(user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    return _batch_get(profiles_table, user_ids)


def db_get_user_role(user_id: str) -> Optional[str]:
    """Returns the single role assigned to an identity, or None if unassigned."""
    item = user_roles_table.get_item(Key={'user_id': user_id}).get('Item')
    if not item:
        print(f"DB Read: No role assignment for user ID: {user_id}")
        return None
    return item.get('role')


def db_find_or_create_profile(user_id: str, email: Optional[str], full_name: Optional[str],
                              phone: Optional[str], role: str) -> Dict[str, Any]:
    """
    Establishes the profile and role assignment for a new identity.
    If a role is already assigned the existing records are returned untouched,
    so this is safe to call on every resolution of an identity.
    """
    existing_role = db_get_user_role(user_id)
    if existing_role:
        print(f"DB Check: User {user_id} already has role '{existing_role}'.")
        return db_get_profile_by_id(user_id) or {'id': user_id, 'email': email, 'full_name': full_name, 'phone': phone}

    timestamp = now_iso()
    profile = {
        'id': user_id,
        'full_name': full_name,
        'email': email,
        'phone': phone,
        'created_at': timestamp,
    }
    try:
        profiles_table.put_item(Item=profile, ConditionExpression="attribute_not_exists(id)")
        print(f"DB Write: Created profile for user {user_id}")
    except ClientError as e:
        if not _is_conditional_failure(e):
            raise
        print(f"DB Check: Profile for user {user_id} already exists.")
        profile = db_get_profile_by_id(user_id) or profile

    try:
        user_roles_table.put_item(
            Item={'user_id': user_id, 'role': role, 'created_at': timestamp},
            ConditionExpression="attribute_not_exists(user_id)",
        )
        print(f"DB Write: Assigned role '{role}' to user {user_id}")
    except ClientError as e:
        if not _is_conditional_failure(e):
            raise
        print(f"DB Check: Role for user {user_id} was assigned concurrently.")

    return profile


# --- Prescriptions & medicines ---

def db_create_prescription(patient_id: str, doctor_id: Optional[str], notes: Optional[str],
                           reminders_enabled: bool) -> Dict[str, Any]:
    item = {
        'id': str(uuid.uuid4()),
        'patient_id': patient_id,
        'notes': notes,
        'reminders_enabled': reminders_enabled,
        'created_at': now_iso(),
    }
    # doctor_id is a GSI key, so it is left out entirely for self-added entries
    if doctor_id:
        item['doctor_id'] = doctor_id
    prescriptions_table.put_item(Item=item)
    print(f"DB Write: Created prescription {item['id']} for patient {patient_id}")
    return item


def db_batch_get_prescriptions(prescription_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    return _batch_get(prescriptions_table, prescription_ids)


def db_list_prescriptions_by_doctor(doctor_id: str) -> List[Dict[str, Any]]:
    """Newest first."""
    print(f"DB Read: Listing prescriptions for doctor {doctor_id}")
    return _query_all(
        prescriptions_table,
        IndexName='doctor_id-created_at-index',
        KeyConditionExpression=Key('doctor_id').eq(doctor_id),
        ScanIndexForward=False,
    )


def db_list_prescriptions_by_patient(patient_id: str) -> List[Dict[str, Any]]:
    """Newest first."""
    print(f"DB Read: Listing prescriptions for patient {patient_id}")
    return _query_all(
        prescriptions_table,
        IndexName='patient_id-created_at-index',
        KeyConditionExpression=Key('patient_id').eq(patient_id),
        ScanIndexForward=False,
    )


def db_create_prescription_medicines(prescription_id: str, medicines: List[MedicineItem]) -> List[Dict[str, Any]]:
    items = []
    for med in medicines:
        items.append({
            'id': str(uuid.uuid4()),
            'prescription_id': prescription_id,
            'medicine_name': med.medicine_name,
            'dosage': med.dosage,
            'frequency': med.frequency.value,
            'duration': med.duration,
            'timing': med.timing.value,
            'time_of_day': [t.value for t in med.time_of_day],
        })
    with prescription_medicines_table.batch_writer() as batch:
        for item in items:
            batch.put_item(Item=item)
    print(f"DB Write: Created {len(items)} medicines for prescription {prescription_id}")
    return items


def db_list_medicines_for_prescription(prescription_id: str) -> List[Dict[str, Any]]:
    return _query_all(
        prescription_medicines_table,
        IndexName='prescription_id-index',
        KeyConditionExpression=Key('prescription_id').eq(prescription_id),
    )


def db_list_medicines_for_prescriptions(prescription_ids: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]:
    """Medicines grouped by prescription id; prescriptions without medicines map to []."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for pid in dict.fromkeys(prescription_ids):
        grouped[pid] = db_list_medicines_for_prescription(pid)
    return grouped


def db_batch_get_medicines(medicine_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    return _batch_get(prescription_medicines_table, medicine_ids)


# --- Store assignments ---

def db_create_store_assignment(prescription_id: str, store_id: str) -> Dict[str, Any]:
    item = {
        'id': str(uuid.uuid4()),
        'prescription_id': prescription_id,
        'store_id': store_id,
        'status': StoreStatus.PENDING.value,
        'assigned_at': now_iso(),
    }
    store_prescriptions_table.put_item(Item=item)
    print(f"DB Write: Assigned prescription {prescription_id} to store {store_id}")
    return item


def db_get_first_store_assignment(prescription_id: str) -> Optional[Dict[str, Any]]:
    response = store_prescriptions_table.query(
        IndexName='prescription_id-index',
        KeyConditionExpression=Key('prescription_id').eq(prescription_id),
        Limit=1,
    )
    items = response.get('Items', [])
    return items[0] if items else None


def db_get_first_store_assignments(prescription_ids: Iterable[str]) -> Dict[str, Optional[Dict[str, Any]]]:
    """First assignment per prescription id, one index query per distinct id."""
    return {pid: db_get_first_store_assignment(pid) for pid in dict.fromkeys(prescription_ids)}


def db_list_store_assignments(store_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """Assignments for a store, newest first, optionally restricted to one status."""
    kwargs: Dict[str, Any] = {
        'IndexName': 'store_id-assigned_at-index',
        'KeyConditionExpression': Key('store_id').eq(store_id),
        'ScanIndexForward': False,
    }
    if status:
        kwargs['FilterExpression'] = Attr('status').eq(status)
    print(f"DB Read: Listing assignments for store {store_id} (status={status})")
    return _query_all(store_prescriptions_table, **kwargs)


def db_update_store_assignment_status(assignment_id: str, store_id: str, status: str) -> Optional[Dict[str, Any]]:
    """
    Sets the status of an existing assignment held by the given store.
    Any status may follow any other. Returns None when no such assignment exists.
    """
    try:
        response = store_prescriptions_table.update_item(
            Key={'id': assignment_id},
            UpdateExpression="SET #s = :s",
            ConditionExpression="attribute_exists(id) AND store_id = :sid",
            ExpressionAttributeNames={'#s': 'status'},
            ExpressionAttributeValues={':s': status, ':sid': store_id},
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            print(f"DB Update Error: Assignment {assignment_id} not found.")
            return None
        raise
    print(f"DB Write: Assignment {assignment_id} status set to '{status}'")
    return response.get('Attributes')


# --- Dose tracking ---

def db_list_doses_between(patient_id: str, start_iso: str, end_iso: str) -> List[Dict[str, Any]]:
    """Dose records with start <= scheduled_time < end."""
    return _query_all(
        dose_tracking_table,
        IndexName='patient_id-scheduled_time-index',
        KeyConditionExpression=Key('patient_id').eq(patient_id) & Key('scheduled_time').gte(start_iso),
        FilterExpression=Attr('scheduled_time').lt(end_iso),
    )


def db_list_recent_doses(patient_id: str, limit: int) -> List[Dict[str, Any]]:
    """The newest `limit` dose records by scheduled_time."""
    response = dose_tracking_table.query(
        IndexName='patient_id-scheduled_time-index',
        KeyConditionExpression=Key('patient_id').eq(patient_id),
        ScanIndexForward=False,
        Limit=limit,
    )
    return response.get('Items', [])


def db_create_dose_record(medicine_id: str, patient_id: str, status: str,
                          scheduled_time: str, taken_at: Optional[str]) -> Dict[str, Any]:
    item = {
        'id': str(uuid.uuid4()),
        'prescription_medicine_id': medicine_id,
        'patient_id': patient_id,
        'scheduled_time': scheduled_time,
        'status': status,
        'taken_at': taken_at,
    }
    dose_tracking_table.put_item(Item=item)
    print(f"DB Write: Created dose record {item['id']} ({status}) for medicine {medicine_id}")
    return item


def db_update_dose_record(record_id: str, status: str, taken_at: Optional[str]) -> Dict[str, Any]:
    response = dose_tracking_table.update_item(
        Key={'id': record_id},
        UpdateExpression="SET #s = :s, taken_at = :t",
        ExpressionAttributeNames={'#s': 'status'},
        ExpressionAttributeValues={':s': status, ':t': taken_at},
        ReturnValues="ALL_NEW",
    )
    print(f"DB Write: Dose record {record_id} set to '{status}'")
    return response.get('Attributes', {})


# --- Notifications ---

def db_create_notification(user_id: str, title: str, message: str, type: str) -> Dict[str, Any]:
    """Stores a notification and pushes the insert to realtime subscribers of that user."""
    item = {
        'id': str(uuid.uuid4()),
        'user_id': user_id,
        'title': title,
        'message': message,
        'type': type,
        'read': False,
        'created_at': now_iso(),
    }
    notifications_table.put_item(Item=item)
    print(f"DB Write: Created '{type}' notification {item['id']} for user {user_id}")
    notification_channel.publish(NOTIFICATIONS_TABLE_NAME, item)
    return item


def db_list_notifications(user_id: str, limit: int = NOTIFICATION_FETCH_LIMIT) -> List[Dict[str, Any]]:
    response = notifications_table.query(
        IndexName='user_id-created_at-index',
        KeyConditionExpression=Key('user_id').eq(user_id),
        ScanIndexForward=False,
        Limit=limit,
    )
    return response.get('Items', [])


def db_mark_notification_read(notification_id: str, user_id: str) -> bool:
    """Marks one of the user's notifications read; False if the user has no such notification."""
    try:
        notifications_table.update_item(
            Key={'id': notification_id},
            UpdateExpression="SET #r = :r",
            ConditionExpression="attribute_exists(id) AND user_id = :uid",
            ExpressionAttributeNames={'#r': 'read'},
            ExpressionAttributeValues={':r': True, ':uid': user_id},
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            print(f"DB Update Error: Notification {notification_id} not found for user {user_id}.")
            return False
        raise
    print(f"DB Write: Notification {notification_id} marked read")
    return True


def db_mark_all_notifications_read(user_id: str) -> int:
    """Marks every unread notification of a user as read; returns how many were updated."""
    unread = _query_all(
        notifications_table,
        IndexName='user_id-created_at-index',
        KeyConditionExpression=Key('user_id').eq(user_id),
        FilterExpression=Attr('read').eq(False),
    )
    for item in unread:
        db_mark_notification_read(item['id'], user_id)
    print(f"DB Write: Marked {len(unread)} notifications read for user {user_id}")
    return len(unread)
