"""
    redcap_metadata.py exports the data dictionary (metadata) of a Redcap project as a pandas DataFrame.

    A single POST is sent per call.  Non-200 responses and unparseable bodies are reported through the
    returned MetadataResult rather than raised; connection failures raised by requests propagate to the caller.
"""

import attr
import io
import json
import logging
import time
import warnings

import pandas as pd
import requests

from bs4 import BeautifulSoup
from collections import namedtuple
from urllib.parse import urlsplit


logger = logging.getLogger(__name__)

ParseOutcome = namedtuple("ParseOutcome", "data error")


class RedcapValidationError(ValueError):
    """Raised when a Redcap URL or token is unusable, before any request is sent."""


def sanitize_token(token):
    """
        Normalize a Redcap API token.  Tokens are 32 character uppercase hex strings, but are often
        pasted with surrounding whitespace or read from a file with a trailing newline.

        :param token: str
        :return: str, trimmed and uppercased token
    """
    return token.strip().upper()


def mask_token(token, begin_show_chars=3, end_show_chars=2):
    if len(token) <= begin_show_chars + end_show_chars:
        return "***"

    return token[:begin_show_chars] + "***...***" + token[-end_show_chars:]


def collapse(values, collapsed=""):
    """
        Return the comma separated form of values, unless an already collapsed string was supplied.

        :param values: sequence of str or None
        :param collapsed: str
        :return: str, empty when neither is given
    """
    if collapsed:
        return collapsed

    return "" if values is None else ",".join(values)


def _extract_error_message(raw_text):
    """
        Redcap returns errors as {"error": "..."} for json requests and as <hash><error>...</error></hash>
        otherwise.  Return the error text, or an empty str when the body carries neither.
    """
    if not raw_text:
        return ""

    try:
        body = json.loads(raw_text)
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
    except ValueError:
        pass

    return_soup = BeautifulSoup(str(raw_text), "xml")
    if return_soup.hash is not None and return_soup.hash.error is not None:
        return return_soup.hash.error.get_text().strip()

    return ""


def _parse_data_dictionary(raw_text):
    """
        Parse the csv returned by the metadata endpoint.  Every column, field_name included, is read as
        text so that field identifiers like 0123 are not coerced to numbers.  Only empty cells become NaN.

        :param raw_text: str
        :return: ParseOutcome, with data set on success and error set on failure
    """
    try:
        # index_col=False stops rows wider than the header from shifting field_name into the index;
        # the resulting length mismatch warning is turned into a parse failure.
        with warnings.catch_warnings():
            warnings.simplefilter("error", pd.errors.ParserWarning)
            ds = pd.read_csv(
                io.StringIO(raw_text),
                dtype=str,
                keep_default_na=False,
                na_values=[""],
                index_col=False,
            )
    except (ValueError, pd.errors.ParserWarning) as e:  # ParserError and EmptyDataError derive from ValueError
        return ParseOutcome(data=None, error=str(e))

    if not isinstance(ds, pd.DataFrame) or len(ds.columns) == 0:
        return ParseOutcome(data=None, error="No columns were found in the returned csv")

    return ParseOutcome(data=ds, error=None)


@attr.s
class MetadataResult:
    data = attr.ib(eq=False, repr=False)
    success = attr.ib(validator=attr.validators.instance_of(bool))
    status_code = attr.ib()
    outcome_message = attr.ib(validator=attr.validators.instance_of(str))
    forms_collapsed = attr.ib(default="")
    fields_collapsed = attr.ib(default="")
    elapsed_seconds = attr.ib(default=0.0)
    raw_text = attr.ib(default="", repr=False)
    error_message = attr.ib(default="")


@attr.s
class MetadataFetcher:
    # Instance vars
    redcap_uri = attr.ib()
    token = attr.ib(repr=False)
    verbose = attr.ib(default=True, converter=bool)
    config_options = attr.ib(default=None)
    masked_token = attr.ib(init=False, default="")

    @redcap_uri.validator
    def check_uri(self, attribute, value):
        if not isinstance(value, str) or not value:
            raise RedcapValidationError("Must provide redcap_uri to export Redcap metadata")

        # Only the scheme and host are checked; single label hosts like http://redcap/api/ are valid
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            msg = 'Invalid URL format detected for "{}" when exporting Redcap metadata'.format(
                value
            )
            raise RedcapValidationError(msg)

    @token.validator
    def check_token(self, attribute, value):
        if not isinstance(value, str) or not value:
            raise RedcapValidationError("Must provide token to export Redcap metadata")

        if not sanitize_token(value):
            raise RedcapValidationError("Token contains only whitespace")

    @config_options.validator
    def check_config_options(self, attribute, value):
        if value is not None and not hasattr(value, "items"):
            raise RedcapValidationError(
                "config_options expected a dict but received a {} object".format(type(value))
            )

    def __attrs_post_init__(self):
        # Keep only the sanitized token; masked_token is what shows up in repr and log output
        self.token = sanitize_token(self.token)
        self.masked_token = mask_token(self.token)

    def _transport_options(self):
        options = dict(self.config_options or {})

        # 'identity' overrides the default use of gzip and deflate, which can cause requests to fail
        # in the apparent presence of improper data in the Redcap project.
        options.setdefault("headers", {"Accept-Encoding": "identity"})

        return options

    def read(self, forms=None, forms_collapsed="", fields=None, fields_collapsed=""):
        """
            Export the data dictionary, optionally restricted to some forms and/or fields.

            Example usage:
                fetcher = MetadataFetcher(redcap_uri=os.environ['REDCAP_URL'],
                                          token=os.environ['REDCAP_API_TOKEN'])
                result = fetcher.read(forms=['health', 'demographics'])
                if result.success:
                    print(result.data['field_name'])

            :param forms: list of form names.  Ignored when forms_collapsed is given
            :param forms_collapsed: str, comma separated form names
            :param fields: list of field names.  Ignored when fields_collapsed is given
            :param fields_collapsed: str, comma separated field names

            :return: MetadataResult.  success is True only for a 200 status code with a body that parsed as csv
        """
        forms_collapsed = collapse(forms, forms_collapsed)
        fields_collapsed = collapse(fields, fields_collapsed)

        post_data = {
            "token": self.token,
            "content": "metadata",
            "format": "csv",
            "forms": forms_collapsed,
            "fields": fields_collapsed,
        }

        logger.debug(
            "Requesting metadata from %s with token %s", self.redcap_uri, self.masked_token
        )

        start_time = time.monotonic()
        r = requests.post(self.redcap_uri, data=post_data, **self._transport_options())
        elapsed_seconds = time.monotonic() - start_time

        status_code = r.status_code
        raw_text = r.text
        error_message = ""

        if status_code == 200:
            outcome = _parse_data_dictionary(raw_text)

            if outcome.error is None:
                success = True
                ds = outcome.data
                outcome_message = (
                    "The data dictionary describing {:,} fields was read from REDCap in {:.1f} seconds.  "
                    "The http status code was {}.".format(len(ds), elapsed_seconds, status_code)
                )

                # The parsed DataFrame holds everything the text did
                raw_text = ""
            else:
                success = False
                ds = pd.DataFrame()
                outcome_message = (
                    "The REDCap metadata export failed.  The http status code was {}.  "
                    "The csv could not be parsed: {}.  The 'raw_text' returned was '{}'.".format(
                        status_code, outcome.error, raw_text
                    )
                )
        else:
            success = False
            ds = pd.DataFrame()
            error_message = _extract_error_message(raw_text)
            outcome_message = (
                "The REDCap metadata export operation was not successful.  The http status code was {}.  "
                "The error message was:\n{}".format(status_code, raw_text)
            )

        if self.verbose:
            if success:
                logger.info(outcome_message)
            else:
                logger.warning(outcome_message)

        return MetadataResult(
            data=ds,
            success=success,
            status_code=status_code,
            outcome_message=outcome_message,
            forms_collapsed=forms_collapsed,
            fields_collapsed=fields_collapsed,
            elapsed_seconds=elapsed_seconds,
            raw_text=raw_text,
            error_message=error_message,
        )


def fetch_metadata(
    redcap_uri,
    token,
    forms=None,
    forms_collapsed="",
    fields=None,
    fields_collapsed="",
    verbose=True,
    config_options=None,
):
    """
        Export the metadata of a Redcap project.  See MetadataFetcher.read

        :param redcap_uri: str, the API URL of the Redcap server
        :param token: str, the project token
        :param verbose: bool, log the outcome message.  The message may contain PHI from the server response
        :param config_options: dict of keyword args passed to requests.post (timeout, verify, proxies, headers, ...)

        :raises RedcapValidationError: when redcap_uri or token is missing or malformed
        :return: MetadataResult
    """
    fetcher = MetadataFetcher(
        redcap_uri=redcap_uri,
        token=token,
        verbose=verbose,
        config_options=config_options,
    )

    return fetcher.read(
        forms=forms,
        forms_collapsed=forms_collapsed,
        fields=fields,
        fields_collapsed=fields_collapsed,
    )
