"""
nanobrowser - 基于 Playwright + LLM 的自主网页智能体

架构说明（感知 → 规划 → 执行 循环）：
  1. 感知模块 (Perception)  - 提取页面上可见且可交互的元素，生成带索引的快照
  2. 规划模块 (Planner)     - 清洗页面内容后连同用户目标发给 LLM，解析出下一步动作
  3. 执行模块 (Controller)  - 点击 / 输入 / 滚动 / 跳转；跳转前先把任务状态写入存储，
                              新页面加载后由新的 Agent 实例恢复

依赖安装：
    pip install -e .
    playwright install chromium

运行示例：
    python web_agent.py "在页面上搜索今天天气怎么样" --url https://www.bing.com
    python web_agent.py --set-key anthropic sk-ant-... --provider anthropic
"""

import argparse
import asyncio
import sys

from nanobrowser.config import RUN_STATE_KEY, AgentConfig, save_credentials
from nanobrowser.logging_config import setup_logging
from nanobrowser.models import RunOutcome
from nanobrowser.providers import PROVIDERS
from nanobrowser.runner import run_session
from nanobrowser.storage import JsonFileStore
from nanobrowser.ui import ConsoleUI

# 默认状态文件：保存 API Key、模型偏好以及跳转中的任务
DEFAULT_STATE_FILE = ".nanobrowser_state.json"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="自主网页智能体")
    parser.add_argument("goal", nargs="?", help="任务目标")
    parser.add_argument("--url", help="起始网址")
    parser.add_argument("--provider", choices=sorted(PROVIDERS), help="LLM 服务商")
    parser.add_argument("--model", help="模型名称")
    parser.add_argument("--base-url", help="custom 服务商的接口地址（OpenAI 兼容）")
    parser.add_argument("--max-steps", type=int, help="最大步数")
    parser.add_argument("--headless", action="store_true", help="无界面运行浏览器")
    parser.add_argument("--state-file", default=DEFAULT_STATE_FILE, help="状态文件路径")
    parser.add_argument("--set-key", nargs=2, metavar=("PROVIDER", "API_KEY"), help="保存 API Key 后退出")
    parser.add_argument("--log-level", help="日志级别（debug/info/warning）")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    store = JsonFileStore(args.state_file)

    if args.set_key:
        provider, api_key = args.set_key
        save_credentials(store, provider, api_key, args.model)
        print(f"✓ 已保存 {provider} 的 API Key")
        return 0

    config = AgentConfig.from_env(
        provider=args.provider,
        model=args.model,
        base_url=args.base_url,
        max_steps=args.max_steps,
    )
    if not args.goal and store.get(RUN_STATE_KEY) is None:
        print("请提供任务目标，例如：python web_agent.py \"查找 iPhone 的价格\" --url https://www.apple.com")
        return 2

    report = asyncio.run(run_session(args.goal, args.url, config, store, ConsoleUI(), headless=args.headless))
    if report is None:
        return 0
    print(f"\n✓ Agent 执行结束：{report.outcome.value}（共 {report.step_count} 步）")
    return 1 if report.outcome is RunOutcome.FAILED else 0


if __name__ == "__main__":
    sys.exit(main())
