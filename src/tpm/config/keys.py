# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/config/keys.py

# ---------------------------------------------------------------------
# Top-level groups of the property tree
# ---------------------------------------------------------------------
HOSTS = "hosts"
DATASERVICES = "dataservices"
REPL_SERVICES = "repl_services"
MANAGERS = "managers"
CONNECTORS = "connectors"
DATASERVICE_HOST_OPTIONS = "dataservice_host_options"
DATASERVICE_REPLICATION_OPTIONS = "dataservice_replication_options"

# reserved pseudo-member present in every group
DEFAULTS = "defaults"
# computed values that are never written back to the user-facing file
SYSTEM = "system"

GROUPS = (HOSTS, DATASERVICES, REPL_SERVICES, MANAGERS, CONNECTORS)
OPTION_GROUPS = (DATASERVICE_HOST_OPTIONS, DATASERVICE_REPLICATION_OPTIONS)

# ---------------------------------------------------------------------
# Host scoping, set while expanding one configuration per host
# ---------------------------------------------------------------------
DEPLOYMENT_HOST = "deployment_host"
DEPLOYMENT_DATASERVICE = "deployment_dataservice"
DEPLOYMENT_CONFIGURATION_KEY = "deployment_configuration_key"
DEPLOYMENT_COMMAND = "deployment_command"
COMMAND_DATASERVICES = "command_dataservices"
NO_CONNECTORS = "no_connectors"

# ---------------------------------------------------------------------
# Host properties
# ---------------------------------------------------------------------
HOST = "host"
USERID = "user"
HOME_DIRECTORY = "home_directory"
TEMP_DIRECTORY = "temp_directory"
REMOTE_EXECUTABLE = "remote_executable"
REPLICATOR_IS_RUNNING = "replicator_is_running"
MANAGER_IS_RUNNING = "manager_is_running"
CONNECTOR_IS_RUNNING = "connector_is_running"
PROVISION_SOURCE = "provision_source"
WAIT_FOR_MEMBERS = "wait_for_members"

SKIPPED_VALIDATION_CLASSES = "skip_validation_check"
ENABLED_VALIDATION_CLASSES = "enable_validation_check"
SKIPPED_VALIDATION_WARNINGS = "skip_validation_warnings"

# ---------------------------------------------------------------------
# Data service properties
# ---------------------------------------------------------------------
DATASERVICENAME = "dataservice_name"
DATASERVICE_MEMBERS = "dataservice_hosts"
DATASERVICE_MASTER_MEMBER = "dataservice_master_host"
DATASERVICE_RELAY_SOURCE = "dataservice_relay_source"
DATASERVICE_TOPOLOGY = "dataservice_topology"
DATASERVICE_IS_COMPOSITE = "dataservice_is_composite"
DATASERVICE_COMPOSITE_DATASOURCES = "dataservice_composite_datasources"
DATASERVICE_MASTER_SERVICES = "dataservice_master_services"
DATASERVICE_HUB_MEMBER = "dataservice_hub_host"
DATASERVICE_HUB_SERVICE = "dataservice_hub_service"
DATASERVICE_THL_PORT = "dataservice_thl_port"
DATASERVICE_CONNECTORS = "dataservice_connectors"
DATASERVICE_ENABLED = "dataservice_enabled"
DATASERVICE_USE_MANAGEMENT = "dataservice_use_management"
DATASERVICE_USE_CONNECTOR = "dataservice_use_connector"
TARGET_DATASERVICE = "target_dataservice"

DEFAULT_THL_PORT = 2112
DEFAULT_TOPOLOGY = "master-slave"

# ---------------------------------------------------------------------
# Replication service properties
# ---------------------------------------------------------------------
REPL_ROLE = "repl_role"
REPL_MASTERHOST = "repl_master_host"
REPL_MASTER_URI = "repl_master_uri"
REPL_SVC_ENABLE_SLAVE_THL_LISTENER = "repl_svc_enable_slave_thl_listener"
REPL_SVC_APPLIER_FILTERS = "repl_svc_applier_filters"
REPL_SVC_EXTRACTOR_ONLY = "repl_svc_extractor_only"

ROLE_MASTER = "master"
ROLE_SLAVE = "slave"
ROLE_RELAY = "relay"
ROLE_DIRECT = "direct"

# ---------------------------------------------------------------------
# Promotion properties decided during commit validation
# ---------------------------------------------------------------------
IS_COMMAND_COORDINATOR = "is_command_coordinator"
RESTART_CONNECTORS = "restart_connectors"
MANAGER_POLICY = "manager_policy"

# ---------------------------------------------------------------------
# Release layout
# ---------------------------------------------------------------------
RELEASE_NAME = "release_name"

# ---------------------------------------------------------------------
# Starting from a known position
# ---------------------------------------------------------------------
FROM_EVENT = "from_event"
FROM_MASTER_BACKUP_EVENT = "from_master_backup_event"
BACKUP_MYSQLDUMP = "mysqldump"
BACKUP_XTRABACKUP = "xtrabackup"
BACKUP_SNAPSHOT = "snapshot"
MASTER_BACKUP_TYPES = (BACKUP_MYSQLDUMP, BACKUP_XTRABACKUP, BACKUP_SNAPSHOT)

REPL_AUTOENABLE = "repl_auto_enable"
REPL_MYSQL_DATADIR = "repl_datasource_mysql_data_directory"
REPL_DBHOST = "repl_datasource_host"
REPL_DBPORT = "repl_datasource_port"
REPL_DBLOGIN = "repl_datasource_user"
REPL_DBPASSWORD = "repl_datasource_password"
ROOT_PREFIX = "root_command_prefix"
