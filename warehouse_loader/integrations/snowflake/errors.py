"""Snowflake error texts mapped to job error kinds."""

from typing import Tuple

import snowflake.connector

from warehouse_loader.core.errors import ErrorKind, JobError, iter_causes

# SQL compilation error raised for objects that already exist
ALREADY_EXISTS_SQLSTATE = '42601'

ERROR_MAPPINGS: Tuple[JobError, ...] = (
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"The requested warehouse does not exist or not authorized"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"The requested database does not exist or not authorized"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"failed to connect to db. verify account name is correct"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"Incorrect username or password was specified"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"Insufficient privileges to operate on table"),
    JobError.compile(
        ErrorKind.PERMISSION_ERROR,
        r"IP .* is not allowed to access Snowflake. Contact your local security administrator or please create "
        r"a case with Snowflake Support or reach us on our support line",
    ),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"User temporarily locked"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"Schema .* already exists, but current role has no privileges on it"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"The AWS Access Key Id you provided is not valid"),
    JobError.compile(
        ErrorKind.PERMISSION_ERROR,
        r"Location .* is not allowed by integration .*. Please use DESC INTEGRATION to check out allowed and "
        r"blocked locations.",
    ),
    JobError.compile(
        ErrorKind.INSUFFICIENT_RESOURCE_ERROR,
        r"Warehouse .* cannot be resumed because resource monitor .* has exceeded its quota",
    ),
    JobError.compile(
        ErrorKind.INSUFFICIENT_RESOURCE_ERROR,
        r"Your free trial has ended and all of your virtual warehouses have been suspended. Add billing "
        r"information in the Snowflake web UI to continue using the full set of Snowflake features.",
    ),
    JobError.compile(ErrorKind.RESOURCE_NOT_FOUND_ERROR, r"Table .* does not exist"),
    JobError.compile(
        ErrorKind.COLUMN_COUNT_ERROR,
        r"Operation failed because soft limit on objects of type 'Column' per table was exceeded. Please reduce "
        r"number of 'Column's or contact Snowflake support about raising the limit.",
    ),
)


def is_already_exists(err: BaseException) -> bool:
    for cause in iter_causes(err):
        if isinstance(cause, snowflake.connector.errors.Error) and cause.sqlstate == ALREADY_EXISTS_SQLSTATE:
            return True
    return False
