import os
import boto3

from botocore.config import Config

main_boto_region = os.environ.get('MAIN_BOTO_REGION', 'eu-central-1')
# retries are left to botocore
aws_config_ddb = Config(retries={'max_attempts': 3, 'mode': 'standard'},
                        region_name=os.environ.get('AWS_REGION', main_boto_region))

# Cognito Client.
# Used for admin operations on the user pool (demo users seeding).
cognito_client = boto3.client('cognito-idp', region_name=main_boto_region)
