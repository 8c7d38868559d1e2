"""Functions to prepare bag-info metadata for a bag."""

import logging
import os
import re

from bagr.tags import BagInfo, Tag


logger = logging.getLogger(__name__)

CONFIG_ITEMS = ["Bag-Group-Identifier", "Contact-Email", "Contact-Name",
                "Contact-Phone", "Organization-Address", "Source-Organization",
                "External-Description", "External-Identifier"]


def env_var_name(label: str) -> str:
    return "BAGIT_" + label.upper().replace("-", "_")


def config_metadata_from_env(environ=None) -> dict:
    """Get bag-info metadata from `BAGIT_*` environment variables.

    `BAGIT_CONTACT_NAME` sets `Contact-Name`; several variables sharing that
    prefix (`BAGIT_CONTACT_NAME_2`, ...) give the label several values. Unset
    labels are left out.
    """
    if environ is None:
        environ = os.environ
    config_metadata = {}
    env_keys = sorted(environ)

    for item in CONFIG_ITEMS:
        var_name = env_var_name(item)
        r = re.compile(f'^{var_name}(_[0-9A-Z]+)?$')

        vars_from_env = list(filter(r.match, env_keys))
        if len(vars_from_env) < 1:
            logger.debug("%s not set, leaving %s out of bag-info", var_name, item)
            continue
        elif len(vars_from_env) == 1:
            from_env = environ.get(vars_from_env[0])
        else:
            from_env = [environ.get(v) for v in vars_from_env]

        config_metadata[item] = from_env

    return config_metadata


def parse_info_option(value: str) -> tuple[str, str]:
    """Split a `LABEL=VALUE` option into its parts, raising ValueError for an invalid tag."""
    label, sep, tag_value = value.partition("=")
    if not sep or not label.strip():
        raise ValueError(f"expected LABEL=VALUE, got {value!r}")
    tag = Tag(label.strip(), tag_value.strip())
    return tag.label, tag.value


def prep_bag_info(options: tuple = (), environ=None) -> BagInfo:
    """Combine environment metadata with `LABEL=VALUE` options; options come last."""
    bag_info = BagInfo()
    bag_info.update(config_metadata_from_env(environ))
    for option in options:
        bag_info.add(*parse_info_option(option))
    return bag_info
