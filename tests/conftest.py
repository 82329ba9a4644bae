import boto3
import pytest
from botocore.credentials import Credentials
from botocore.stub import Stubber

from edgeroute.config import AwsConfig
from edgeroute.context import AppContext, _ContextStore
from edgeroute.origins.signing import OriginAuthenticator

ACCESS_KEY = "AKIDEXAMPLE"
SECRET_KEY = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"
BUCKET_ADDRESS = "assets-bucket.s3.us-east-1.amazonaws.com"
API_ADDRESS = "abc123.lambda-url.us-east-1.on.aws"


@pytest.fixture(autouse=True)
def app_context():
    _ContextStore.clear()
    _ContextStore.set(
        AppContext(name="test", env="test", aws=AwsConfig(profile="default", region="us-east-1"))
    )
    yield
    _ContextStore.clear()


@pytest.fixture
def credentials():
    return Credentials(ACCESS_KEY, SECRET_KEY)


@pytest.fixture
def authenticator(credentials):
    return OriginAuthenticator(credentials, "us-east-1")


@pytest.fixture
def boto3_session():
    # Static keys keep botocore from searching the environment for credentials.
    return boto3.Session(
        aws_access_key_id=ACCESS_KEY,
        aws_secret_access_key=SECRET_KEY,
        region_name="us-east-1",
    )


@pytest.fixture
def s3_client(boto3_session):
    return boto3_session.client("s3")


@pytest.fixture
def s3_stubber(s3_client):
    with Stubber(s3_client) as stubber:
        yield stubber
        stubber.assert_no_pending_responses()
