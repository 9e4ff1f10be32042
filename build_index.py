"""
Index builder script

Builds (or loads) the CSV index of a flat BPMAI model directory and reports
how many models of each modelling language are available.
"""

import os

from loguru import logger

from bpmai_convert.filtering import filter_model_files
from bpmai_convert.metadata import MetadataIndexer, load_index
from bpmai_convert.parse_args import parse_index_args
from bpmai_convert.utils import setup_logging


def main(argv=None):
    args = parse_index_args(argv)
    setup_logging(args.log_level)
    if not args.models_dir:
        raise ValueError("--models_dir (or BPMAI_SOURCE_DIR) is required")

    if os.path.exists(args.index_path) and not args.rebuild:
        logger.info(f"Loading index from {args.index_path}")
        index = load_index(args.index_path)
    else:
        indexer = MetadataIndexer(args.models_dir, metadata_marker=args.metadata_marker)
        index = indexer.build_index(output_path=args.index_path)

    counts = {}
    for prefix in args.prefixes:
        counts[prefix] = len(filter_model_files(index, args.models_dir, prefix, args.language))
        logger.info(f"{prefix} ({args.language}): {counts[prefix]} models")
    return counts


if __name__ == '__main__':
    main()
