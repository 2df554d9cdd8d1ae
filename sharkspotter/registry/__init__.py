from .etcd import EtcdConnectionPool, StorageNodeRegistry
