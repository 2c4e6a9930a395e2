# -*- coding: utf-8 -*-
# © Copyright EnterpriseDB UK Limited 2011-2025
#
# This file is part of barman-recover.
#
# barman-recover is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# barman-recover is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with barman-recover.  If not, see <http://www.gnu.org/licenses/>.

"""
Filesystem housekeeping of the recovery data directory
"""

import logging
import os
import shutil

from barman_recover.exceptions import DeletionRefused, FsOperationFailed
from barman_recover.utils import force_str, mkpath

_logger = logging.getLogger(__name__)


def is_root_path(path):
    """
    Check if a path resolves to the filesystem root

    Empty paths are treated as the root, as they can only come from
    a malformed set of parameters.

    :param str path: the path to check
    :rtype: bool
    """
    if not path or not path.strip():
        return True
    return os.path.realpath(path) == os.path.realpath(os.sep)


def delete_if_exists(path):
    """
    Remove a directory tree, if it exists.

    :param str path: the full path for the directory
    :return bool: True if the directory has been removed, False if it
        doesn't exist
    :raises DeletionRefused: if the path resolves to the filesystem root
    :raises FsOperationFailed: if the removal fails
    """
    _logger.debug("Delete path %s if exists", path)
    if is_root_path(path):
        raise DeletionRefused("refusing to delete recovery path: %r" % path)
    if not os.path.lexists(path):
        return False
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.unlink(path)
    except (OSError, IOError) as e:
        raise FsOperationFailed(
            "recovery path: %s could not be deleted: %s" % (path, force_str(e))
        )
    return True


def create_dir_if_not_exists(path):
    """
    Recursively create a directory if it doesn't exist

    :param str path: full path for the directory
    :raises FsOperationFailed: if the creation fails or if the path
        exists and is not a directory
    """
    _logger.debug("Create directory %s if it does not exists", path)
    if os.path.exists(path) and not os.path.isdir(path):
        raise FsOperationFailed(
            "A file with the same name exists, but is not a directory: %s" % path
        )
    try:
        mkpath(path)
    except (OSError, IOError) as e:
        raise FsOperationFailed(
            "recovery path: %s could not be created: %s" % (path, force_str(e))
        )
