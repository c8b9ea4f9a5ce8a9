"""Configuration files mounted into the redis HA workloads.

The haproxy configuration and the init scripts reference every announce
service by name, so their content depends on the HA replica count.
"""

REDIS_PORT = 6379
SENTINEL_PORT = 26379
HAPROXY_HEALTH_PORT = 8888
MASTER_GROUP = "argocd"

HAPROXY_CFG_KEY = "haproxy.cfg"
HAPROXY_SCRIPT_KEY = "haproxy_init.sh"
INIT_SCRIPT_KEY = "init.sh"
REDIS_CONF_KEY = "redis.conf"
SENTINEL_CONF_KEY = "sentinel.conf"
LIVENESS_SCRIPT_KEY = "redis_liveness.sh"
READINESS_SCRIPT_KEY = "redis_readiness.sh"
SENTINEL_LIVENESS_SCRIPT_KEY = "sentinel_liveness.sh"


def _quorum(replicas: int) -> int:
    return replicas // 2 + 1


def haproxy_config(announce: list[str]) -> str:
    """Return haproxy.cfg routing to whichever server the sentinels elected."""
    quorum = _quorum(len(announce))
    lines = [
        "defaults REDIS",
        "  mode tcp",
        "  timeout connect 4s",
        "  timeout server 6m",
        "  timeout client 6m",
        "  timeout check 2s",
        "",
        "listen health_check_http_url",
        f"  bind :{HAPROXY_HEALTH_PORT}",
        "  mode http",
        "  monitor-uri /healthz",
        "  option dontlognull",
        "",
    ]
    for index in range(len(announce)):
        lines.extend(
            [
                f"backend check_if_redis_is_master_{index}",
                "  mode tcp",
                "  option tcp-check",
                "  tcp-check connect",
                "  tcp-check send PING\\r\\n",
                "  tcp-check expect string +PONG",
                f"  tcp-check send SENTINEL\\ get-master-addr-by-name\\ {MASTER_GROUP}\\r\\n",
                f"  tcp-check expect string REPLACE_ANNOUNCE{index}",
                "  tcp-check send QUIT\\r\\n",
                "  tcp-check expect string +OK",
            ]
        )
        lines.extend(
            f"  server R{peer} {host}:{SENTINEL_PORT} check inter 1s"
            for peer, host in enumerate(announce)
        )
        lines.append("")
    lines.extend(
        [
            "frontend ft_redis_master",
            f"  bind :{REDIS_PORT}",
            "  use_backend bk_redis_master",
            "",
            "backend bk_redis_master",
            "  mode tcp",
            "  option tcp-check",
            "  tcp-check connect",
            "  tcp-check send PING\\r\\n",
            "  tcp-check expect string +PONG",
            "  tcp-check send info\\ replication\\r\\n",
            "  tcp-check expect string role:master",
            "  tcp-check send QUIT\\r\\n",
            "  tcp-check expect string +OK",
        ]
    )
    for index, host in enumerate(announce):
        lines.append(
            f"  use-server R{index} if {{ srv_is_up(R{index}) }} "
            f"{{ nbsrv(check_if_redis_is_master_{index}) ge {quorum} }}"
        )
        lines.append(
            f"  server R{index} {host}:{REDIS_PORT} check inter 1s fall 1 rise 1"
        )
    return "\n".join(lines) + "\n"


def haproxy_init_script(announce: list[str]) -> str:
    """Return the script substituting announce service addresses into haproxy.cfg."""
    lines = [
        "HAPROXY_CONF=/data/haproxy.cfg",
        'cp /readonly/haproxy.cfg "$HAPROXY_CONF"',
    ]
    for index, host in enumerate(announce):
        lines.extend(
            [
                "for loop in $(seq 1 10); do",
                f"  getent hosts {host} && break",
                f'  echo "Waiting for service {host} to be ready ($loop) ..." && sleep 1',
                "done",
                f"ANNOUNCE_IP{index}=$(getent hosts \"{host}\" | awk '{{ print $1 }}')",
                f'if [ -z "$ANNOUNCE_IP{index}" ]; then',
                f'  echo "Could not resolve the announce ip for {host}"',
                "  exit 1",
                "fi",
                f'sed -i "s/REPLACE_ANNOUNCE{index}/$ANNOUNCE_IP{index}/" "$HAPROXY_CONF"',
            ]
        )
    return "\n".join(lines) + "\n"


def init_script(
    service: str, announce_prefix: str, namespace: str, quorum: int
) -> str:
    """Return the script writing redis.conf and sentinel.conf for one server pod."""
    return f"""echo "$(date) Start..."
HOSTNAME="$(hostname)"
INDEX="${{HOSTNAME##*-}}"
SENTINEL_PORT={SENTINEL_PORT}
REDIS_PORT={REDIS_PORT}
ANNOUNCE_IP=$(getent hosts "{announce_prefix}-$INDEX" | awk '{{ print $1 }}')
if [ -z "$ANNOUNCE_IP" ]; then
  echo "Could not resolve the announce ip for this pod"
  exit 1
fi
MASTER="$(redis-cli -h {service}.{namespace}.svc -p "$SENTINEL_PORT" sentinel get-master-addr-by-name {MASTER_GROUP} | grep -E '[0-9]{{1,3}}\\.[0-9]{{1,3}}\\.[0-9]{{1,3}}\\.[0-9]{{1,3}}')"
mkdir -p /data/conf
cp /readonly-config/redis.conf /data/conf/redis.conf
cp /readonly-config/sentinel.conf /data/conf/sentinel.conf
if [ -z "$MASTER" ] || [ "$MASTER" = "$ANNOUNCE_IP" ]; then
  MASTER="$ANNOUNCE_IP"
else
  echo "replicaof $MASTER $REDIS_PORT" >> /data/conf/redis.conf
fi
echo "sentinel monitor {MASTER_GROUP} $MASTER $REDIS_PORT {quorum}" >> /data/conf/sentinel.conf
echo "sentinel announce-ip $ANNOUNCE_IP" >> /data/conf/sentinel.conf
echo "sentinel announce-port $SENTINEL_PORT" >> /data/conf/sentinel.conf
echo "replica-announce-ip $ANNOUNCE_IP" >> /data/conf/redis.conf
echo "replica-announce-port $REDIS_PORT" >> /data/conf/redis.conf
echo "$(date) Ready..."
"""


def redis_conf() -> str:
    return f"""dir "/data"
port {REDIS_PORT}
bind 0.0.0.0
maxmemory 0
maxmemory-policy volatile-lru
min-replicas-max-lag 5
min-replicas-to-write 1
rdbchecksum yes
rdbcompression yes
repl-diskless-sync yes
save ""
"""


def sentinel_conf() -> str:
    return f"""dir "/data"
port {SENTINEL_PORT}
bind 0.0.0.0
sentinel down-after-milliseconds {MASTER_GROUP} 10000
sentinel failover-timeout {MASTER_GROUP} 180000
maxclients 10000
sentinel parallel-syncs {MASTER_GROUP} 5
"""


def _ping_script(port: int, allow_loading: bool) -> str:
    condition = '[ "$response" != "PONG" ]'
    if allow_loading:
        condition += ' && [ "${response:0:7}" != "LOADING" ]'
    return f"""response=$(
  redis-cli \\
    -h localhost \\
    -p {port} \\
    ping
)
if {condition} ; then
  echo "$response"
  exit 1
fi
echo "response=$response"
"""


def ha_config_data(
    service: str, announce_prefix: str, announce: list[str], namespace: str
) -> dict[str, str]:
    """Return the data of the redis HA config map."""
    return {
        HAPROXY_CFG_KEY: haproxy_config(announce),
        HAPROXY_SCRIPT_KEY: haproxy_init_script(announce),
        INIT_SCRIPT_KEY: init_script(
            service, announce_prefix, namespace, _quorum(len(announce))
        ),
        REDIS_CONF_KEY: redis_conf(),
        SENTINEL_CONF_KEY: sentinel_conf(),
    }


def ha_health_data() -> dict[str, str]:
    """Return the data of the redis HA health config map."""
    return {
        LIVENESS_SCRIPT_KEY: _ping_script(REDIS_PORT, allow_loading=True),
        READINESS_SCRIPT_KEY: _ping_script(REDIS_PORT, allow_loading=False),
        SENTINEL_LIVENESS_SCRIPT_KEY: _ping_script(SENTINEL_PORT, allow_loading=False),
    }
