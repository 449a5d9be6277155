# Copyright: (c) 2021, Red Hat | Ansible
# GNU General Public License v3.0+ (see COPYING or https://www.gnu.org/licenses/gpl-3.0.txt)

import logging
import sys
from argparse import ArgumentParser

from nodemaintenance.module_utils.args_common import CONTROLLER_ARG_SPEC
from nodemaintenance.module_utils.config import load_settings
from nodemaintenance.module_utils.k8s.client import get_api_client
from nodemaintenance.module_utils.k8s.exceptions import CoreException
from nodemaintenance.module_utils.manager import Manager

FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"
logger = logging.getLogger("node_maintenance_operator")

_ARG_TYPES = {"int": int, "float": float}


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        description="Cordon, taint and drain nodes requested by NodeMaintenance objects."
        "\nEvery option can also be set with a NODE_MAINTENANCE_<OPTION> environment variable."
    )
    parser.add_argument(
        "--kubeconfig",
        help="Path to a kubeconfig file, defaults to the in-cluster service account.",
    )
    parser.add_argument("--context", help="The kubeconfig context to use.")
    parser.add_argument(
        "--config", help="YAML file with controller settings, keyed by option name."
    )
    for name, spec in CONTROLLER_ARG_SPEC.items():
        flag = "--{0}".format(name.replace("_", "-"))
        if spec.get("type") == "bool":
            parser.add_argument(flag, dest=name, choices=["true", "false"])
            continue
        parser.add_argument(
            flag,
            dest=name,
            type=_ARG_TYPES.get(spec.get("type"), str),
            choices=spec.get("choices"),
            help="default: {0}".format(spec.get("default")),
        )
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = vars(parser.parse_args(argv))
    auth = {"kubeconfig": args.pop("kubeconfig"), "context": args.pop("context")}
    config_file = args.pop("config")

    try:
        settings = load_settings(args, config_file=config_file)
    except CoreException as e:
        parser.error(str(e))

    logging.basicConfig(format=FORMAT, level=settings["log_level"])

    try:
        client = get_api_client(auth)
    except CoreException as e:
        logger.error("%s", e)
        return 1

    Manager(client, settings).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
