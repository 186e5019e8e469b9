import json
import os
import logging
from urllib.parse import unquote_plus

import boto3
from botocore.exceptions import ClientError

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

_sqs_client = None


def get_sqs_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs")
    return _sqs_client


def build_message(record: dict) -> dict:
    """Turn one S3 event record into the queue message body."""
    s3_info = record["s3"]
    bucket = s3_info["bucket"]["name"]
    obj = s3_info["object"]
    # Keys arrive URL-encoded
    key = unquote_plus(obj["key"])
    sequencer = obj.get("sequencer", "")

    return {
        "bucket": bucket,
        "key": key,
        "size": obj.get("size"),
        "etag": obj.get("eTag"),
        "sequencer": sequencer,
        "event_name": record.get("eventName"),
        "event_time": record.get("eventTime"),
        # S3 may deliver the same event more than once
        "dedup_key": f"{bucket}/{key}/{sequencer}",
    }


def is_object_created(record: dict) -> bool:
    return (
        record.get("eventSource") == "aws:s3"
        and str(record.get("eventName", "")).startswith("ObjectCreated:")
        and "s3" in record
    )


def handler(event, context):
    """
    Forward S3 object-created notifications to the event queue.

    One message is sent per record. Records that are not object-created
    notifications are skipped. Client errors are re-raised so the invocation
    is retried and ends up in the dead letter queue if it keeps failing.
    """
    try:
        queue_url = os.environ.get("SQS_QUEUE_URL")
        if not queue_url:
            raise ValueError("SQS_QUEUE_URL environment variable not set")

        records = (event or {}).get("Records", []) if isinstance(event, dict) else []
        sqs_client = get_sqs_client()

        forwarded = []
        skipped = 0
        for record in records:
            if not is_object_created(record):
                logger.info(f"Skipping non object-created record: {record.get('eventName')}")
                skipped += 1
                continue

            message = build_message(record)
            response = sqs_client.send_message(
                QueueUrl=queue_url,
                MessageBody=json.dumps(message, separators=(",", ":")),
                MessageAttributes={
                    "dedup_key": {"DataType": "String", "StringValue": message["dedup_key"]},
                },
            )
            logger.info(
                f"Forwarded s3://{message['bucket']}/{message['key']} as message {response['MessageId']}"
            )
            forwarded.append(response["MessageId"])

        return {
            "statusCode": 200,
            "body": json.dumps({
                "message": f"Forwarded {len(forwarded)} object(s)",
                "forwarded": len(forwarded),
                "skipped": skipped,
                "message_ids": forwarded,
            }),
        }

    except ClientError as e:
        logger.error(f"Error sending message to queue: {str(e)}")
        raise e
    except Exception as e:
        logger.error(f"Error forwarding S3 notification: {str(e)}")
        raise e
