"""基本使用示例"""

import os
from salesforce_sync import Config, SyncService


def main():
    """主函数"""
    # 从环境变量获取凭证
    instance_url = os.getenv("SF_INSTANCE_URL")
    refresh_token = os.getenv("SF_REFRESH_TOKEN")

    if not instance_url or not refresh_token:
        print("请设置环境变量 SF_INSTANCE_URL 和 SF_REFRESH_TOKEN")
        return

    config = Config(os.getenv("SYNC_CONFIG", "config.json"))
    config.set("salesforce.instance_url", instance_url)
    config.set("salesforce.refresh_token", refresh_token)
    config.set("salesforce.client_id", os.getenv("SF_CLIENT_ID", ""))
    config.set("salesforce.client_secret", os.getenv("SF_CLIENT_SECRET", ""))

    # 初始化同步服务
    print("初始化同步服务...")
    service = SyncService(config)

    if not service.test_connections():
        print("连接测试失败")
        return

    # 本地保存会按映射立即推送，失败时进入推送队列
    print("\n保存本地用户...")
    store = service.entity_store
    user = store.create("user", {"name": "张三", "mail": "zhangsan@example.com"})
    user_id = store.save(user)
    print(f"  用户 ID: {user_id}")

    for mapped_object in service.mapped_objects.load_by_entity("user", user_id):
        print(f"  已关联远程记录: {mapped_object.sfid()}")

    # 处理一轮推送队列、拉取和远程删除
    print("\n执行一轮同步...")
    result = service.run_once()
    print(f"  推送: {result['push']}")
    print(f"  拉取: {result['pull']}")
    print(f"  删除: {result['deleted']}")

    # 队列状态
    print("\n推送队列状态:")
    stats = service.push_queue.get_queue_stats()
    print(f"  总数: {stats['total']}")
    for status, count in stats['by_status'].items():
        print(f"  {status}: {count}")

    # 手动处理独立推送的映射
    for mapping in service.mapping_storage.load_by_properties(push_standalone=True):
        count = service.process_standalone(mapping.id)
        print(f"\n独立推送 {mapping.id}: {count} 项")

    print("\n示例程序执行完成！")


if __name__ == "__main__":
    main()
