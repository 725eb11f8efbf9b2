"""
Unit tests for the Snowflake driver.

The connector is replaced by a recorder so the tests check the statements
issued and their order, not Snowflake itself.
"""
import logging
import pytest
import sys
import os

import snowflake.connector
from botocore.exceptions import ClientError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from warehouse_loader.core.context import Context
from warehouse_loader.core.db import QueryError
from warehouse_loader.core.errors import ConnectionTimeoutError, ErrorKind, LoadTableError, WarehouseError
from warehouse_loader.core.model import ColumnInfo, Destination, LoadFile, Source, Warehouse
from warehouse_loader.integrations.snowflake import SNOWFLAKE, SnowflakeDriver
from warehouse_loader.integrations.snowflake.errors import ALREADY_EXISTS_SQLSTATE, is_already_exists
from warehouse_loader.monitoring.stats import MemStats
from warehouse_loader.storage.credentials import StsCredentialProvider, TemporaryCredentials
from warehouse_loader.upload.uploader import ManifestUploader

LOCATION = 'https://bucket.s3.amazonaws.com/rudder-warehouse-load-objects/tracks/source/load.csv.gz'

TRACKS_SCHEMA = {'ID': 'string', 'RECEIVED_AT': 'datetime', 'EVENT': 'string'}


class RecordingCursor:
    def __init__(self, recorder):
        self.recorder = recorder
        self.description = None
        self._row = None

    def execute(self, statement, params=None, timeout=None):
        self.recorder.statements.append(statement)
        for marker, error in self.recorder.failures.items():
            if marker in statement:
                raise error
        self._row = self.recorder.merge_counts if 'MERGE INTO' in statement else None

    def fetchone(self):
        return self._row

    def fetchall(self):
        return [self._row] if self._row else []


class RecordingConnection:
    def __init__(self, recorder, params):
        self.recorder = recorder
        self.params = params
        self.closed = False

    def cursor(self):
        return RecordingCursor(self.recorder)

    def close(self):
        self.closed = True


class Recorder:
    """Stands in for snowflake.connector.connect and records what is run."""

    def __init__(self):
        self.connections = []
        self.statements = []
        self.failures = {}
        self.merge_counts = (2, 1)

    def connect(self, **params):
        conn = RecordingConnection(self, params)
        self.connections.append(conn)
        return conn

    def matching(self, prefix):
        return [s for s in self.statements if s.strip().startswith(prefix)]


def static_credentials(destination):
    return TemporaryCredentials('AKIDEXAMPLE', 'sekrit', 'tok3n')


def no_credentials(destination):
    raise AssertionError("credentials should not be requested")


class SnowflakeTestCase:
    """Shared setup: driver over a recording connector."""

    destination_config = {}
    credential_provider = staticmethod(static_credentials)

    def setup_method(self):
        self.recorder = Recorder()
        self.stats = MemStats()
        self.driver = SnowflakeDriver(
            config={'slow_query_threshold': 300, 'query_timeout': 0},
            stats=self.stats,
            credential_provider=self.credential_provider,
            connector=self.recorder.connect,
        )
        config = {
            'account': 'acc', 'user': 'loader', 'password': 'pw', 'role': 'LOADER',
            'database': 'DB', 'warehouse': 'WH',
        }
        config.update(self.destination_config)
        self.warehouse = Warehouse(
            namespace='NS',
            source=Source(id='src-1', name='web', source_type='HTTP'),
            destination=Destination(id='dest-1', name='sf', destination_type=SNOWFLAKE, config=config),
            workspace_id='ws-1',
        )
        self.uploader = ManifestUploader(
            schema_in_upload={'TRACKS': TRACKS_SCHEMA},
            load_files={'TRACKS': [LoadFile(LOCATION)]},
        )
        self.ctx = Context.background()

    def setup_driver(self):
        self.driver.setup(self.ctx, self.warehouse, self.uploader)


class TestConnection(SnowflakeTestCase):
    """Tests for connecting and session setup."""

    def test_setup_connects_unscoped(self):
        """The driver connection should not select the namespace."""
        self.setup_driver()
        params = self.recorder.connections[0].params
        assert params['application'] == 'Rudderstack_Warehouse'
        assert params['database'] == 'DB'
        assert 'schema' not in params
        assert self.recorder.statements == ["ALTER SESSION SET ABORT_DETACHED_QUERY=TRUE"]

    def test_connect_timeout(self):
        """A connection timeout should be passed as login timeout."""
        self.driver.set_connection_timeout(30)
        self.setup_driver()
        assert self.recorder.connections[0].params['login_timeout'] == 30

    def test_connect_error(self):
        """Connector errors should be wrapped and stay classifiable."""
        def failing_connect(**params):
            raise snowflake.connector.errors.DatabaseError(msg='Incorrect username or password was specified.')

        self.driver._connector = failing_connect
        with pytest.raises(WarehouseError, match='^snowflake connect error: ') as exc_info:
            self.setup_driver()
        assert self.driver.classifier.classify_error(exc_info.value) == ErrorKind.PERMISSION_ERROR

    def test_alter_session_error_closes_connection(self):
        """A failing session setup should close the connection."""
        self.recorder.failures['ALTER SESSION'] = RuntimeError('boom')
        with pytest.raises(WarehouseError, match='^snowflake alter session error: boom'):
            self.setup_driver()
        assert self.recorder.connections[0].closed

    def test_test_connection_timeout(self):
        """An expired deadline should surface as a connection timeout."""
        self.setup_driver()
        with pytest.raises(ConnectionTimeoutError, match='^connection timeout: '):
            self.driver.test_connection(Context(timeout=0), self.warehouse)

    def test_cleanup_closes(self):
        """Cleanup should close the driver connection."""
        self.setup_driver()
        self.driver.cleanup(self.ctx)
        assert self.recorder.connections[0].closed


class TestLoadTable(SnowflakeTestCase):
    """Tests for staging, copy and merge statements."""

    def test_statement_sequence(self):
        """A load should create, copy, merge and drop on its own scoped connection."""
        self.setup_driver()
        del self.recorder.statements[:]

        result = self.driver.load_table(self.ctx, 'TRACKS')

        assert result.inserted == 2
        assert result.updated == 1
        load_conn = self.recorder.connections[1]
        assert load_conn.params['schema'] == 'NS'
        assert load_conn.closed

        statements = self.recorder.statements
        assert statements[0] == "ALTER SESSION SET ABORT_DETACHED_QUERY=TRUE"
        assert statements[1] == 'CREATE TEMPORARY TABLE "NS"."RUDDER_STAGING_TRACKS" LIKE "NS"."TRACKS"'
        assert statements[2].startswith('COPY INTO "NS"."RUDDER_STAGING_TRACKS"')
        assert 'MERGE INTO "NS"."TRACKS" AS original' in statements[3]
        assert statements[4] == 'DROP TABLE IF EXISTS "NS"."RUDDER_STAGING_TRACKS"'

    def test_copy_statement(self):
        """COPY should read the table folder with temporary credentials."""
        self.setup_driver()
        self.driver.load_table(self.ctx, 'TRACKS')

        expected = (
            'COPY INTO "NS"."RUDDER_STAGING_TRACKS"("EVENT","ID","RECEIVED_AT") '
            "FROM 's3://bucket/rudder-warehouse-load-objects/tracks/source' "
            "CREDENTIALS = (AWS_KEY_ID='AKIDEXAMPLE' AWS_SECRET_KEY='sekrit' AWS_TOKEN='tok3n') "
            r"PATTERN = '.*\.csv\.gz' "
            "FILE_FORMAT = ( TYPE = csv FIELD_OPTIONALLY_ENCLOSED_BY = '\"' ESCAPE_UNENCLOSED_FIELD = NONE) "
            "TRUNCATECOLUMNS = TRUE;"
        )
        assert self.recorder.matching('COPY INTO') == [expected]

    def test_copy_logged_redacted(self, caplog):
        """Logged COPY statements should not carry credentials."""
        self.setup_driver()
        with caplog.at_level(logging.INFO):
            self.driver.load_table(self.ctx, 'TRACKS')
        assert "AWS_KEY_ID='***'" in caplog.text
        assert 'sekrit' not in caplog.text
        assert 'tok3n' not in caplog.text

    def test_merge_statement(self):
        """MERGE should rank by arrival and overwrite every column."""
        self.setup_driver()
        self.driver.load_table(self.ctx, 'TRACKS')

        merge = self.recorder.matching('MERGE INTO')[0]
        assert 'PARTITION BY "ID"' in merge
        assert '"RECEIVED_AT" DESC' in merge
        assert 'original."ID" = staging."ID"' in merge
        assert 'INSERT ("EVENT","ID","RECEIVED_AT") VALUES (staging."EVENT",staging."ID",staging."RECEIVED_AT")' in merge
        assert 'UPDATE SET original."EVENT" = staging."EVENT"' in merge

    def test_keep_first_merge(self):
        """When target values win the update should be a self assignment."""
        self.uploader.use_new_record = False
        self.setup_driver()
        self.driver.load_table(self.ctx, 'TRACKS')

        merge = self.recorder.matching('MERGE INTO')[0]
        assert 'UPDATE SET original."EVENT" = original."EVENT";' in merge

    def test_discards_merge_keys(self):
        """Discards should be partitioned and matched on row, table and column."""
        self.uploader.schema_in_upload = {'RUDDER_DISCARDS': {
            'ROW_ID': 'string', 'COLUMN_NAME': 'string', 'TABLE_NAME': 'string',
            'COLUMN_VALUE': 'string', 'RECEIVED_AT': 'datetime',
        }}
        self.uploader.load_files = {'RUDDER_DISCARDS': [LoadFile(LOCATION)]}
        self.setup_driver()
        self.driver.load_table(self.ctx, 'RUDDER_DISCARDS')

        merge = self.recorder.matching('MERGE INTO')[0]
        assert 'PARTITION BY "ROW_ID","COLUMN_NAME","TABLE_NAME"' in merge
        assert ('original."ROW_ID" = staging."ROW_ID" AND original."TABLE_NAME" = staging."TABLE_NAME" '
                'AND original."COLUMN_NAME" = staging."COLUMN_NAME"') in merge

    def test_copy_failure_releases_staging(self):
        """A failing COPY should drop the staging table and close the connection."""
        self.setup_driver()
        self.recorder.failures['COPY INTO'] = RuntimeError("Table 'NS.RUDDER_STAGING_TRACKS' does not exist")

        with pytest.raises(LoadTableError) as exc_info:
            self.driver.load_table(self.ctx, 'TRACKS')

        assert str(exc_info.value).startswith('copy into table: ')
        assert self.driver.classifier.classify_error(exc_info.value) == ErrorKind.RESOURCE_NOT_FOUND_ERROR
        assert self.recorder.statements[-1] == 'DROP TABLE IF EXISTS "NS"."RUDDER_STAGING_TRACKS"'
        assert self.recorder.connections[1].closed
        assert self.recorder.matching('MERGE INTO') == []

    def test_create_staging_failure(self):
        """A failing staging table creation should be prefixed accordingly."""
        self.setup_driver()
        self.recorder.failures['CREATE TEMPORARY TABLE'] = RuntimeError('Insufficient privileges to operate on table')

        with pytest.raises(LoadTableError, match='^create temporary table: ') as exc_info:
            self.driver.load_table(self.ctx, 'TRACKS')

        assert self.driver.classifier.classify_error(exc_info.value) == ErrorKind.PERMISSION_ERROR
        assert self.recorder.connections[1].closed

    def test_merge_failure(self):
        """A failing MERGE should be prefixed and still release staging."""
        self.setup_driver()
        self.recorder.failures['MERGE INTO'] = RuntimeError('merge failed')

        with pytest.raises(LoadTableError, match='^merge into table: merge failed'):
            self.driver.load_table(self.ctx, 'TRACKS')

        assert self.recorder.statements[-1] == 'DROP TABLE IF EXISTS "NS"."RUDDER_STAGING_TRACKS"'


class TestStorageIntegration(SnowflakeTestCase):
    """Tests for COPY through a storage integration."""

    destination_config = {'cloudProvider': 'GCP', 'storageIntegration': 'MY_INT'}
    credential_provider = staticmethod(no_credentials)

    def test_integration_auth(self):
        """Integration destinations should not request credentials."""
        self.uploader.load_files = {'TRACKS': [LoadFile('https://storage.googleapis.com/bucket/rudder/tracks/load.csv.gz')]}
        self.setup_driver()
        self.driver.load_table(self.ctx, 'TRACKS')

        copy = self.recorder.matching('COPY INTO')[0]
        assert "FROM 'gcs://bucket/rudder/tracks' STORAGE_INTEGRATION = MY_INT PATTERN" in copy


class TestUserTables(SnowflakeTestCase):
    """Tests for identifies and users on Snowflake."""

    def test_users_staging_and_merge(self):
        """Users should be derived from identifies and merged without ranking."""
        identifies = {'ID': 'string', 'USER_ID': 'string', 'RECEIVED_AT': 'datetime', 'EMAIL': 'string'}
        users = {'ID': 'string', 'RECEIVED_AT': 'datetime', 'EMAIL': 'string'}
        self.uploader.schema_in_upload = {'IDENTIFIES': identifies, 'USERS': users}
        self.uploader.schema_in_warehouse = {'IDENTIFIES': identifies, 'USERS': users}
        self.uploader.load_files = {'IDENTIFIES': [LoadFile(LOCATION)]}
        self.setup_driver()

        errors = self.driver.load_user_tables(self.ctx)

        assert errors == {'IDENTIFIES': None, 'USERS': None}
        creates = self.recorder.matching('CREATE TEMPORARY TABLE "NS"."RUDDER_STAGING_USERS" AS (')
        assert len(creates) == 1
        assert 'FIRST_VALUE("EMAIL" IGNORE NULLS)' in creates[0]
        merges = self.recorder.matching('MERGE INTO "NS"."USERS"')
        assert 'SELECT "ID","EMAIL","RECEIVED_AT" FROM "NS"."RUDDER_STAGING_USERS"' in merges[0]
        drops = self.recorder.matching('DROP TABLE IF EXISTS')
        assert drops == [
            'DROP TABLE IF EXISTS "NS"."RUDDER_STAGING_USERS"',
            'DROP TABLE IF EXISTS "NS"."RUDDER_STAGING_IDENTIFIES"',
        ]

    def test_users_staging_failure(self):
        """A failing users staging table should be reported under users only."""
        identifies = {'ID': 'string', 'USER_ID': 'string', 'RECEIVED_AT': 'datetime'}
        users = {'ID': 'string', 'RECEIVED_AT': 'datetime'}
        self.uploader.schema_in_upload = {'IDENTIFIES': identifies, 'USERS': users}
        self.uploader.schema_in_warehouse = {'USERS': users}
        self.uploader.load_files = {'IDENTIFIES': [LoadFile(LOCATION)]}
        self.recorder.failures['RUDDER_STAGING_USERS" AS'] = RuntimeError('boom')
        self.setup_driver()

        errors = self.driver.load_user_tables(self.ctx)

        assert errors['IDENTIFIES'] is None
        assert str(errors['USERS']) == 'creating staging table for users: boom'


class TestIdentityMappings(SnowflakeTestCase):
    """Tests for identity mapping statements."""

    def test_mappings_statements(self):
        """Mappings should get a surrogate key and merge only the payload."""
        location = 'https://bucket.s3.amazonaws.com/rudder/mappings/mappings.csv.gz'
        self.uploader.schema_in_upload = {'RUDDER_IDENTITY_MAPPINGS': {
            'MERGE_PROPERTY_TYPE': 'string', 'MERGE_PROPERTY_VALUE': 'string',
            'RUDDER_ID': 'string', 'UPDATED_AT': 'datetime',
        }}
        self.uploader.load_files = {'RUDDER_IDENTITY_MAPPINGS': [LoadFile(location)]}
        self.setup_driver()

        result = self.driver.load_identity_mappings_table(self.ctx)

        assert result.inserted == 2
        assert self.recorder.matching('ALTER TABLE "NS"."RUDDER_STAGING_RUDDER_IDENTITY_MAPPINGS" ADD COLUMN "ID" int AUTOINCREMENT')
        copy = self.recorder.matching('COPY INTO')[0]
        assert "FROM 's3://bucket/rudder/mappings/mappings.csv.gz'" in copy
        merge = self.recorder.matching('MERGE INTO')[0]
        assert 'ORDER BY\n' in merge and '"ID" DESC' in merge
        assert 'UPDATE SET original."RUDDER_ID" = staging."RUDDER_ID",original."UPDATED_AT" = staging."UPDATED_AT"' in merge

    def test_merge_rules_copy_single_file(self):
        """Merge rules should be copied from the single load file into the target."""
        location = 'https://bucket.s3.amazonaws.com/rudder/rules/rules.csv.gz'
        self.uploader.load_files = {'RUDDER_IDENTITY_MERGE_RULES': [LoadFile(location)]}
        self.setup_driver()

        self.driver.load_identity_merge_rules_table(self.ctx)

        copy = self.recorder.matching('COPY INTO')[0]
        assert copy.startswith(
            'COPY INTO "NS"."RUDDER_IDENTITY_MERGE_RULES"("MERGE_PROPERTY_1_TYPE","MERGE_PROPERTY_1_VALUE",'
            '"MERGE_PROPERTY_2_TYPE","MERGE_PROPERTY_2_VALUE") '
            "FROM 's3://bucket/rudder/rules/rules.csv.gz'"
        )
        assert self.recorder.connections[-1].closed


class TestIdentityFailures(SnowflakeTestCase):
    """Tests for operation prefixes on failing identity loads."""

    def setup_method(self):
        super().setup_method()
        self.uploader.load_files = {
            'RUDDER_IDENTITY_MAPPINGS': [LoadFile('https://bucket.s3.amazonaws.com/rudder/mappings/m.csv.gz')],
            'RUDDER_IDENTITY_MERGE_RULES': [LoadFile('https://bucket.s3.amazonaws.com/rudder/rules/r.csv.gz')],
        }

    @pytest.mark.parametrize("marker,prefix", [
        ('CREATE TEMPORARY TABLE', 'create temporary table: '),
        ('AUTOINCREMENT', 'add autoincrement column: '),
        ('COPY INTO', 'copy into table: '),
        ('MERGE INTO', 'merge into table: '),
    ])
    def test_mappings_step_failure(self, marker, prefix):
        """Each failing mappings step should carry its operation and release staging."""
        self.setup_driver()
        self.recorder.failures[marker] = RuntimeError('boom')

        with pytest.raises(LoadTableError) as exc_info:
            self.driver.load_identity_mappings_table(self.ctx)

        assert str(exc_info.value) == f'{prefix}boom'
        assert self.recorder.statements[-1] == 'DROP TABLE IF EXISTS "NS"."RUDDER_STAGING_RUDDER_IDENTITY_MAPPINGS"'
        assert self.recorder.connections[-1].closed

    def test_merge_rules_copy_failure(self):
        """A failing merge rules COPY should be prefixed and close the connection."""
        self.setup_driver()
        self.recorder.failures['COPY INTO'] = RuntimeError('boom')

        with pytest.raises(LoadTableError, match='^copy into table: boom$'):
            self.driver.load_identity_merge_rules_table(self.ctx)

        assert self.recorder.connections[-1].closed

    def test_missing_load_file(self):
        """Without a load file the failure should name the lookup."""
        self.uploader.load_files = {}
        self.setup_driver()

        with pytest.raises(LoadTableError, match='^getting load file: no load file for table RUDDER_IDENTITY_MAPPINGS$'):
            self.driver.load_identity_mappings_table(self.ctx)
        with pytest.raises(LoadTableError, match='^getting load file: '):
            self.driver.load_identity_merge_rules_table(self.ctx)


def denied_credentials(destination):
    raise ClientError(
        {'Error': {'Code': 'AccessDenied', 'Message': 'User is not authorized to perform sts:GetSessionToken'}},
        'GetSessionToken',
    )


class TestCredentialFailure(SnowflakeTestCase):
    """Tests for loads whose temporary credentials cannot be issued."""

    credential_provider = staticmethod(denied_credentials)

    def test_credential_failure_is_typed_copy_error(self):
        """An STS failure should fail the COPY step and release staging."""
        self.setup_driver()

        with pytest.raises(LoadTableError) as exc_info:
            self.driver.load_table(self.ctx, 'TRACKS')

        assert str(exc_info.value).startswith('copy into table: fetching temporary credentials: ')
        assert 'AccessDenied' in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__.__cause__, ClientError)
        assert self.recorder.matching('COPY INTO') == []
        assert self.recorder.statements[-1] == 'DROP TABLE IF EXISTS "NS"."RUDDER_STAGING_TRACKS"'
        assert self.recorder.connections[1].closed


class TestAlreadyExists(SnowflakeTestCase):
    """Tests for tolerating objects that already exist."""

    def already_exists(self):
        return snowflake.connector.errors.ProgrammingError(
            msg="SQL compilation error: column 'X' already exists", sqlstate=ALREADY_EXISTS_SQLSTATE
        )

    def test_is_already_exists_follows_causes(self):
        """The sqlstate should be found through wrapping errors."""
        wrapped = QueryError('wrapped')
        wrapped.__cause__ = self.already_exists()
        assert is_already_exists(wrapped)
        assert not is_already_exists(QueryError('other'))

    def test_other_sqlstate(self):
        """Other programming errors are not already exists."""
        err = snowflake.connector.errors.ProgrammingError(msg='syntax error', sqlstate='42000')
        assert not is_already_exists(err)

    def test_single_column_tolerated(self):
        """Adding one existing column should be a no-op."""
        self.setup_driver()
        self.recorder.failures['ADD COLUMN'] = self.already_exists()
        self.driver.add_columns(self.ctx, 'TRACKS', [ColumnInfo('X', 'string')])

    def test_batch_not_tolerated(self):
        """A multi column ALTER hitting an existing column should fail."""
        self.setup_driver()
        self.recorder.failures['ADD COLUMN'] = self.already_exists()
        with pytest.raises(QueryError):
            self.driver.add_columns(self.ctx, 'TRACKS', [ColumnInfo('X', 'string'), ColumnInfo('Y', 'int')])
        assert self.recorder.statements[-1] == 'ALTER TABLE "NS"."TRACKS" ADD COLUMN "X" varchar, "Y" number;'


class TestStsCredentialProvider:
    """Tests for temporary credential issuing."""

    def test_uses_destination_keys(self):
        """The destination's own access key should be preferred."""
        calls = []

        class FakeSts:
            def get_session_token(self, DurationSeconds):
                calls.append(DurationSeconds)
                return {'Credentials': {'AccessKeyId': 'ASIA', 'SecretAccessKey': 'sk', 'SessionToken': 'st'}}

        def factory(service, aws_access_key_id=None, aws_secret_access_key=None):
            calls.append((service, aws_access_key_id, aws_secret_access_key))
            return FakeSts()

        provider = StsCredentialProvider(
            config={'access_key_id': 'PLATFORM', 'secret_access_key': 'platform', 'session_duration': 900},
            client_factory=factory,
        )
        destination = Destination(id='d', config={'accessKeyID': 'OWN', 'accessKey': 'own'})

        assert provider(destination) == TemporaryCredentials('ASIA', 'sk', 'st')
        assert calls == [('sts', 'OWN', 'own'), 900]
