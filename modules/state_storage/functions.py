"""
State Storage Module Functions
Versioned, encrypted S3 bucket and DynamoDB lock table for a self-managed
Pulumi state backend
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List


def state_bucket_name(cluster_name: str, aws_region: str) -> str:
    # Region suffix keeps the name globally unique across stacks
    return f"{cluster_name}-state-{aws_region}"


def lock_table_name(cluster_name: str) -> str:
    return f"{cluster_name}-state-lock"


def create_state_bucket(name: str, bucket_name: str, tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create the state bucket with versioning, encryption, public access block and lifecycle

    Args:
        name: Resource name prefix
        bucket_name: S3 bucket name
        tags: Additional tags

    Returns:
        Dict with bucket resources and outputs
    """
    tags = tags or {}

    bucket = aws.s3.Bucket(
        f"{name}-state-bucket",
        bucket=bucket_name,
        tags={
            **tags,
            "Name": bucket_name,
            "Purpose": "Infrastructure state",
            "Module": "state-storage"
        },
        opts=pulumi.ResourceOptions(protect=True)
    )

    versioning = aws.s3.BucketVersioning(
        f"{name}-state-bucket-versioning",
        bucket=bucket.id,
        versioning_configuration=aws.s3.BucketVersioningVersioningConfigurationArgs(status="Enabled")
    )

    encryption = aws.s3.BucketServerSideEncryptionConfiguration(
        f"{name}-state-bucket-encryption",
        bucket=bucket.id,
        rules=[aws.s3.BucketServerSideEncryptionConfigurationRuleArgs(
            apply_server_side_encryption_by_default=aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs(
                sse_algorithm="aws:kms"
            ),
            bucket_key_enabled=True
        )]
    )

    public_access_block = aws.s3.BucketPublicAccessBlock(
        f"{name}-state-bucket-pab",
        bucket=bucket.id,
        block_public_acls=True,
        block_public_policy=True,
        ignore_public_acls=True,
        restrict_public_buckets=True
    )

    lifecycle = aws.s3.BucketLifecycleConfiguration(
        f"{name}-state-bucket-lifecycle",
        bucket=bucket.id,
        rules=[aws.s3.BucketLifecycleConfigurationRuleArgs(
            id="expire-noncurrent-state",
            status="Enabled",
            filter=aws.s3.BucketLifecycleConfigurationRuleFilterArgs(prefix=""),
            noncurrent_version_expiration=aws.s3.BucketLifecycleConfigurationRuleNoncurrentVersionExpirationArgs(
                noncurrent_days=90
            ),
            abort_incomplete_multipart_upload=aws.s3.BucketLifecycleConfigurationRuleAbortIncompleteMultipartUploadArgs(
                days_after_initiation=1
            )
        )]
    )

    return {
        "bucket": bucket,
        "bucket_id": bucket.id,
        "bucket_arn": bucket.arn,
        "versioning": versioning,
        "encryption": encryption,
        "public_access_block": public_access_block,
        "lifecycle": lifecycle
    }


def create_lock_table(name: str, table_name: str, tags: Dict[str, str] = None) -> Dict[str, any]:
    """DynamoDB table keyed on LockID"""
    tags = tags or {}

    table = aws.dynamodb.Table(
        f"{name}-state-lock-table",
        name=table_name,
        billing_mode="PAY_PER_REQUEST",
        hash_key="LockID",
        attributes=[aws.dynamodb.TableAttributeArgs(name="LockID", type="S")],
        server_side_encryption=aws.dynamodb.TableServerSideEncryptionArgs(enabled=True),
        point_in_time_recovery=aws.dynamodb.TablePointInTimeRecoveryArgs(enabled=True),
        tags={
            **tags,
            "Name": table_name,
            "Purpose": "Infrastructure state locking",
            "Module": "state-storage"
        }
    )

    return {
        "table": table,
        "table_name": table.name,
        "table_arn": table.arn
    }


def backend_commands(bucket_name: str, aws_region: str, stack: str = "dev") -> List[str]:
    """
    Commands that point Pulumi at the state bucket

    Args:
        bucket_name: State bucket name
        aws_region: Bucket region
        stack: Stack to initialise

    Returns:
        Shell commands, one per entry
    """
    return [
        f"pulumi login 's3://{bucket_name}?region={aws_region}&awssdk=v2'",
        f"pulumi stack init {stack} --secrets-provider=awskms://alias/{bucket_name}?region={aws_region}",
        f"pulumi config set aws:region {aws_region}",
        "pulumi up",
    ]


def create_state_storage_resources(cluster_name: str, aws_region: str,
                                   tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create the state bucket and lock table

    Args:
        cluster_name: Cluster name for resource naming
        aws_region: AWS region
        tags: Additional tags

    Returns:
        Dict with state storage outputs and resources
    """
    tags = tags or {}
    bucket_name = state_bucket_name(cluster_name, aws_region)
    table_name = lock_table_name(cluster_name)

    bucket_result = create_state_bucket(cluster_name, bucket_name, tags)
    table_result = create_lock_table(cluster_name, table_name, tags)

    return {
        "bucket_name": bucket_name,
        "bucket_arn": bucket_result["bucket_arn"],
        "lock_table_name": table_result["table_name"],
        "backend_url": f"s3://{bucket_name}",
        "configuration_commands": backend_commands(bucket_name, aws_region),
        "_bucket": bucket_result["bucket"],
        "_table": table_result["table"]
    }
