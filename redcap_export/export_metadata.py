#!/usr/bin/env python
# Exports the project data dictionary as csv to stdout.
# Usage: export_metadata.py [forms_collapsed] [fields_collapsed]

import logging
import sys

from redcap_export.config import config, transport_options
from redcap_export.redcap_metadata import fetch_metadata


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    forms_collapsed = argv[0] if len(argv) > 0 else ""
    fields_collapsed = argv[1] if len(argv) > 1 else ""

    # RedcapValidationError is a ValueError, as is a bad timeout
    try:
        result = fetch_metadata(
            redcap_uri=config["api_url"],
            token=config["api_token"],
            forms_collapsed=forms_collapsed,
            fields_collapsed=fields_collapsed,
            verbose=config["verbose"],
            config_options=transport_options(config),
        )
    except ValueError as e:
        print("Unable to export metadata from Redcap: {}".format(e), file=sys.stderr)
        return 2

    print("HTTP Status: " + str(result.status_code), file=sys.stderr)

    if not result.success:
        # When verbose, the outcome message was already logged
        if not config["verbose"]:
            print(result.outcome_message, file=sys.stderr)
        return 1

    result.data.to_csv(sys.stdout, index=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
